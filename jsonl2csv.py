#!/usr/bin/env python3

import argparse
import csv
import json
import logging
import math
import os
from collections import namedtuple
from pathlib import Path

__version__ = "0.1.0"

LOGGER = logging.getLogger(__name__)

ConversionResult = namedtuple("ConversionResult", ["input_path", "output_path", "header", "rows_written"])


class ConversionError(Exception):
    """Base class for every failure that aborts a conversion."""


class IoError(ConversionError):
    """An input or output file could not be opened, read or written."""

    def __init__(self, path, message):
        self.path = Path(path)
        super().__init__(f"{message}: {path}")


class ParseError(ConversionError):
    """A non-blank line is not valid JSON."""

    def __init__(self, line_number, detail=""):
        self.line_number = line_number
        message = f"JSON parse error on line {line_number}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class SchemaError(ConversionError):
    """A line holds valid JSON that is not an object."""

    def __init__(self, line_number):
        self.line_number = line_number
        super().__init__(f"Line {line_number} is not a JSON object")


def _reject_constant(name):
    # json accepts NaN and Infinity by default; they are not valid JSON.
    raise ValueError(f"invalid constant {name!r}")


def _parse_float(text):
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number out of range: {text}")
    return value


def _float_text(value: float) -> str:
    # repr gives 1e+16 and 1e-07; write exponents without sign padding.
    mantissa, sep, exponent = repr(value).partition("e")
    if not sep:
        return mantissa
    return f"{mantissa}e{int(exponent)}"


def _log_level(name: str):
    """Map a level name to its number, or None when logging does not know it."""
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else None


def json_to_string(value) -> str:
    """Render one parsed JSON value as the text of a CSV field.

    Strings are returned untouched; quoting is left to the CSV writer. Arrays and
    objects come back as compact JSON rather than being flattened.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return repr(value)
    if isinstance(value, float):
        return _float_text(value)
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class LineConverter:
    """Turns JSONL lines into CSV rows on an existing csv writer.

    The header is captured from the first object seen and written straight away;
    until then the converter is waiting for a header and nothing is written.
    """

    def __init__(self, writer):
        self.writer = writer
        self.header = None
        self.rows_written = 0

    @property
    def awaiting_header(self) -> bool:
        return self.header is None

    def feed(self, line_number: int, line: str):
        """Process one raw input line, returning the row written or None for a blank line."""
        if not line.strip():
            LOGGER.debug("Skipping blank line %d", line_number)
            return None

        try:
            record = json.loads(line, parse_float=_parse_float, parse_constant=_reject_constant)
        except ValueError as exc:
            raise ParseError(line_number, getattr(exc, "msg", str(exc))) from exc

        if not isinstance(record, dict):
            raise SchemaError(line_number)

        if self.awaiting_header:
            self.header = list(record.keys())
            LOGGER.debug("Captured header from line %d: %s", line_number, self.header)
            self.writer.writerow(self.header)

        row = [json_to_string(record[key]) if key in record else "" for key in self.header]
        self.writer.writerow(row)
        self.rows_written += 1
        return row


def _open(path: Path, mode: str, role: str):
    try:
        if mode == "w":
            return path.open("w", encoding="utf-8", newline="")
        return path.open(mode, encoding="utf-8", newline="\n")
    except OSError as exc:
        action = "create" if mode == "w" else "open"
        raise IoError(path, f"Cannot {action} {role} file ({exc.strerror or exc})") from exc


def _read_lines(inf, path: Path):
    """Yield (line_number, line) pairs, reporting read failures against the input path."""
    lines = iter(inf)
    line_number = 0
    while True:
        try:
            line = next(lines)
        except StopIteration:
            return
        except UnicodeDecodeError as exc:
            raise IoError(path, f"Cannot decode input near line {line_number + 1} ({exc.reason})") from exc
        except OSError as exc:
            raise IoError(path, f"Cannot read input near line {line_number + 1} ({exc.strerror or exc})") from exc
        line_number += 1
        yield line_number, line


def convert(input_path, output_path) -> ConversionResult:
    """Convert the JSONL file at input_path to a CSV file at output_path.

    The file is streamed one line at a time. Any failure aborts the run; rows
    written before the failing line stay in the output file.
    """
    input_path = Path(input_path)
    output_path = Path(output_path)

    with _open(input_path, "r", "input") as inf:
        outf = _open(output_path, "w", "output")
        try:
            with outf:
                converter = LineConverter(csv.writer(outf, lineterminator="\n"))
                for line_number, line in _read_lines(inf, input_path):
                    converter.feed(line_number, line)
        except OSError as exc:
            raise IoError(output_path, f"Cannot write output file ({exc.strerror or exc})") from exc

    LOGGER.info("Wrote %d rows from %s to %s", converter.rows_written, input_path, output_path)
    return ConversionResult(
        input_path=input_path,
        output_path=output_path,
        header=converter.header or [],
        rows_written=converter.rows_written,
    )


def main(argv=None):
    parser = argparse.ArgumentParser(description="Convert a JSONL file (one JSON object per line) to CSV")
    parser.add_argument("jsonl", type=Path, help="Input JSONL file to convert. The first object's keys become the CSV header")
    parser.add_argument("csv", type=Path, help="Output CSV file to create or overwrite")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    log_level = os.getenv("LOG_LEVEL", "WARNING")
    level = _log_level(log_level)
    logging.basicConfig(
        level=logging.WARNING if level is None else level,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if level is None:
        LOGGER.warning("Unknown LOG_LEVEL %r, using WARNING", log_level)

    try:
        result = convert(args.jsonl, args.csv)
    except ConversionError as exc:
        raise SystemExit(f"error: {exc}") from exc
    print(f"Conversion from {result.input_path} to {result.output_path} successfully completed.")


if __name__ == "__main__":
    main()
