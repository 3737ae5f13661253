"""Turns a raw catalog payload into validated ``Project`` records.

Two payload shapes are accepted through ``load_catalog``:

* a Google Sheets (gviz) response, either bare or wrapped in the
  ``google.visualization.Query.setResponse(...)`` envelope, whose rows are
  read positionally using ``COLUMNS``;
* a plain JSON document ``{"schools": [...], "projects": [...]}`` whose
  projects are keyed records.

Malformed or inactive rows are skipped and counted, never raised. Only a
payload that is not a catalog at all raises ``CatalogLoadError``.
"""
import json
import math
import re
from dataclasses import dataclass

from .catalog import Project, School
from .departments import SCHOOL_DEPARTMENTS, resolve_school
from .exceptions import CatalogLoadError

COLUMNS = ('id', 'name', 'department', 'description', 'price', 'asset_ref', 'date_added', 'status')

FIELD_ALIASES = {
    'department': ('department', 'category'),
    'asset_ref': ('assetRef', 'asset_ref', 'driveId', 'drive_id'),
}

DEFAULT_DESCRIPTION = 'No description available.'

_LEADING_INT = re.compile(r'^\s*([+-]?\d+)')


@dataclass(frozen=True)
class NormalizedCatalog:
    projects: tuple
    schools: tuple
    skipped: int


def parse_document(payload):
    """Decode a catalog payload into a JSON object.

    Text that is not valid JSON on its own is treated as enveloped: the
    substring from the first ``{`` to the last ``}`` is parsed instead.
    """
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, bytes):
        payload = payload.decode('utf-8', errors='replace')
    if not isinstance(payload, str):
        raise CatalogLoadError(f'Unsupported catalog payload type: {type(payload).__name__}')

    try:
        document = json.loads(payload)
    except ValueError:
        start = payload.find('{')
        end = payload.rfind('}')
        if start == -1 or end <= start:
            raise CatalogLoadError('Catalog payload does not contain a JSON object')
        try:
            document = json.loads(payload[start:end + 1])
        except ValueError as e:
            raise CatalogLoadError(f'Catalog payload could not be parsed: {e}') from e

    if not isinstance(document, dict):
        raise CatalogLoadError('Catalog payload is not a JSON object')
    return document


def extract_rows(document):
    """Return ``(rows, raw_schools)`` for either supported document shape."""
    table = document.get('table')
    if isinstance(table, dict):
        return [_gviz_cells(row) for row in table.get('rows') or []], None
    projects = document.get('projects')
    if isinstance(projects, list):
        return projects, document.get('schools')
    raise CatalogLoadError('Catalog payload has neither a table nor a projects list')


def _gviz_cells(row):
    if not isinstance(row, dict):
        return None
    return [cell.get('v') if isinstance(cell, dict) else None for cell in row.get('c') or []]


def _field(row, name):
    if isinstance(row, (list, tuple)):
        index = COLUMNS.index(name)
        return row[index] if index < len(row) else None
    for key in FIELD_ALIASES.get(name, (name,)):
        if row.get(key) is not None:
            return row[key]
    return None


def _text(value):
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def parse_price(value, default):
    """Read a price as an integer, falling back to ``default``.

    Strings contribute their leading integer ("3000.50" -> 3000). Missing,
    non-numeric and non-positive values all give the default.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        price = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            return default
        price = int(value)
    elif isinstance(value, str):
        match = _LEADING_INT.match(value)
        if not match:
            return default
        price = int(match.group(1))
    else:
        return default
    return price if price > 0 else default


def normalize_row(row, default_price):
    """Return a ``Project`` for a raw row, or ``None`` when the row must be skipped."""
    if not isinstance(row, (list, tuple, dict)):
        return None

    project_id = _text(_field(row, 'id'))
    name = _text(_field(row, 'name'))
    asset_ref = _text(_field(row, 'asset_ref'))
    if not project_id or not name or not asset_ref:
        return None

    status = _text(_field(row, 'status')).lower() or 'active'
    if status != 'active':
        return None

    department = _text(_field(row, 'department'))
    return Project(
        id=project_id,
        name=name,
        department=department,
        school=resolve_school(department),
        description=_text(_field(row, 'description')) or DEFAULT_DESCRIPTION,
        price=parse_price(_field(row, 'price'), default_price),
        asset_ref=asset_ref,
        status=status,
    )


def normalize_rows(rows, default_price):
    """Normalize rows in source order. Returns ``(projects, skipped_count)``."""
    projects = []
    skipped = 0
    for row in rows:
        project = normalize_row(row, default_price)
        if project is None:
            skipped += 1
        else:
            projects.append(project)
    return projects, skipped


def build_schools(raw_schools=None):
    """School directory from the payload, or from the department table when absent."""
    schools = []
    for raw in raw_schools or ():
        if not isinstance(raw, dict):
            continue
        name = _text(raw.get('name'))
        departments = raw.get('departments')
        if not name or not isinstance(departments, list):
            continue
        schools.append(School(name=name, departments=tuple(_text(d) for d in departments if _text(d))))
    if schools:
        return schools
    return [School(name=name, departments=tuple(departments)) for name, departments in SCHOOL_DEPARTMENTS]


def load_catalog(payload, default_price):
    """Single entry point: raw payload (text or decoded JSON) to ``NormalizedCatalog``."""
    document = parse_document(payload)
    rows, raw_schools = extract_rows(document)
    projects, skipped = normalize_rows(rows, default_price)
    return NormalizedCatalog(
        projects=tuple(projects),
        schools=tuple(build_schools(raw_schools)),
        skipped=skipped,
    )
