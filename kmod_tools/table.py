# Copyright (c) 2026, Oracle and/or its affiliates.
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Tuple
from typing import Union


class Table:
    """
    Create an aligned, formatted table

    Each column is specified by a string which contains the column name, and
    optionally a colon (":") followed by a format string. You can prefix the
    format string with a "<" or ">" to control the justification of the column
    (it is stripped from the format string). By default, columns are left
    justified and formatted using ``format(value, '')``. Some examples:

    1. "SIZE:>" - a column named "SIZE", right justified
    2. "NAME" - a column named "NAME", left justified, formatted by str()
    3. "ADDR:016x" - a 16-digit hexadecimal value, 0-filled

    All rows are kept until ``write()`` is called, so that every column can be
    as wide as its widest value. A value in a column past the last header is
    printed as is, without alignment.

    :param header: a list of column specifiers, see above for details
    """

    def __init__(self, header: List[str]):
        self.header = []
        # Function (str, int) -> str to justify each column entry
        self.justifier = []
        self.formats = []
        for h in header:
            just = str.ljust
            if ":" in h:
                name, fmt = h.rsplit(":", 1)
            else:
                name, fmt = h, ""
            if len(fmt) > 0 and fmt[0] in ("<", ">"):
                if fmt[0] == ">":
                    just = str.rjust
                fmt = fmt[1:]
            self.header.append(name)
            self.justifier.append(just)
            self.formats.append(fmt)
        self.widths = [len(h) for h in self.header]
        self.rows: List[List[str]] = []

    def _build_row(self, fields: Iterable[Any]) -> List[str]:
        row = []
        for i, data in enumerate(fields):
            if i < len(self.header):
                string = format(data, self.formats[i])
                self.widths[i] = max(self.widths[i], len(string))
            else:
                string = str(data)
            row.append(string)
        return row

    def add_row(self, fields: Iterable[Any]) -> None:
        """Add a row to the table (values expressed as a list)"""
        self.rows.append(self._build_row(fields))

    def row(self, *fields: Any) -> None:
        """Add a row to the table (values expressed as positional args)"""
        self.add_row(fields)

    def _row_str(self, row: List[str]) -> str:
        cells = [
            j(s, w) for j, s, w in zip(self.justifier, row, self.widths)
        ]
        cells.extend(row[len(self.header) :])
        return "  ".join(cells).rstrip()

    def write(self) -> None:
        """Print the table to stdout"""
        print(self._row_str(self.header))
        for row in self.rows:
            print(self._row_str(row))


def print_dictionary(
    dictionary: Union[Dict[str, Any], Iterable[Tuple[str, Any]]]
) -> None:
    """
    Align and print the data

    :param dictionary: dictionary to print, or a sequence of (title, value)
      pairs when titles may repeat
    :returns: None
    """
    if isinstance(dictionary, dict):
        items = list(dictionary.items())
    else:
        items = list(dictionary)
    lcol_length = 10
    for title, _ in items:
        lcol_length = max(len(title), lcol_length)

    for title, value in items:
        print(f"{(title + ':').ljust(lcol_length + 1)} {value}")
