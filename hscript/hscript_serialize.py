from __future__ import annotations

import collections.abc
import configparser
import csv
import io
import json
import tomllib
from typing import Any

import toml
import xmltodict
import yaml

from hscript.hscript_datatypes import CodecError, normalize_value
from hscript.hscript_printer import to_text, to_wire

FORMATS = ('json', 'csv', 'ini', 'xml', 'yaml', 'toml')
FORMAT_ALIASES = {'yml': 'yaml'}


# --------------------------
# Helpers
# --------------------------

def _to_builtin(obj: Any) -> Any:
    # xmltodict returns mapping subclasses; flatten to plain dicts recursively
    if isinstance(obj, list):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, collections.abc.Mapping):
        return {k: _to_builtin(v) for k, v in obj.items()}
    return obj


def canonical_format(fmt: str) -> str:
    f = (fmt or '').strip().lower()
    f = FORMAT_ALIASES.get(f, f)
    if f not in FORMATS:
        raise CodecError(fmt or 'codec', f"Unsupported format: {fmt!r}")
    return f


# --------------------------
# CSV / INI
# --------------------------

def _csv_parse(text: str) -> list:
    reader = csv.reader(io.StringIO(text.strip()), skipinitialspace=True)
    return [[cell.strip() for cell in row] for row in reader if row]


def _csv_stringify(value: Any) -> str:
    if not isinstance(value, list):
        raise ValueError("stringify requires a sequence")
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator='\n')
    if value and isinstance(value[0], dict):
        # Header row from the first record's keys
        keys = list(value[0].keys())
        writer.writerow(keys)
        for record in value:
            if not isinstance(record, dict):
                raise ValueError("every row must be a mapping")
            writer.writerow([to_text(record.get(k)) for k in keys])
    else:
        for row in value:
            cells = row if isinstance(row, list) else [row]
            writer.writerow([to_text(c) for c in cells])
    return buf.getvalue().rstrip('\n')


def _ini_parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(interpolation=None, delimiters=('=',),
                                       comment_prefixes=(';', '#'))
    # Keep key case as written
    parser.optionxform = str
    return parser


def _ini_parse(text: str) -> dict:
    parser = _ini_parser()
    parser.read_string(text)
    return {section: dict(parser[section]) for section in parser.sections()}


def _ini_stringify(value: Any) -> str:
    if not isinstance(value, dict):
        raise ValueError("stringify requires a mapping of sections")
    parser = _ini_parser()
    for section, props in value.items():
        if not isinstance(props, dict):
            raise ValueError(f"section {section!r} must be a mapping")
        parser[section] = {str(k): to_text(v) for k, v in props.items()}
    buf = io.StringIO()
    parser.write(buf, space_around_delimiters=False)
    return buf.getvalue().strip()


# --------------------------
# Public API
# --------------------------

def deserialize(text: str, fmt: str) -> Any:
    """
    Convert text into HScript values.
    Supported fmt: 'json', 'csv', 'ini', 'xml', 'yaml' (or 'yml'), 'toml'.
    Malformed input raises CodecError.
    """
    f = canonical_format(fmt)
    try:
        match f:
            case 'json':
                result = json.loads(text)
            case 'yaml':
                result = yaml.safe_load(text)
            case 'toml':
                result = tomllib.loads(text)
            case 'xml':
                result = _to_builtin(xmltodict.parse(text))
            case 'csv':
                result = _csv_parse(text)
            case _:
                result = _ini_parse(text)
    except CodecError:
        raise
    except Exception as e:
        raise CodecError(f, str(e)) from e
    return normalize_value(result)


def serialize(value: Any, fmt: str, *, pretty: bool = False) -> str:
    """
    Convert an HScript value into text.
    - For XML, a value that is not a single-key mapping is wrapped under {"root": value}
    - pretty indents JSON and XML output
    """
    f = canonical_format(fmt)
    built = to_wire(value)
    try:
        match f:
            case 'json':
                return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
            case 'yaml':
                return yaml.safe_dump(built, sort_keys=False).rstrip('\n')
            case 'toml':
                if not isinstance(built, dict):
                    raise ValueError("stringify requires a mapping")
                return toml.dumps(built).rstrip('\n')
            case 'xml':
                if isinstance(built, dict) and len(built) == 1:
                    root = built
                else:
                    root = {"root": built}
                return xmltodict.unparse(root, pretty=pretty, full_document=False)
            case 'csv':
                return _csv_stringify(built)
            case _:
                return _ini_stringify(built)
    except CodecError:
        raise
    except Exception as e:
        raise CodecError(f, str(e)) from e


__all__ = [
    "FORMATS",
    "canonical_format",
    "deserialize",
    "serialize",
]
