"""Google Sheets run-log adapter (public gviz CSV export)."""
import csv
import io
import logging
import os
import re
from datetime import date
from typing import Dict, List, Optional
from urllib.parse import quote

import requests

from processor.models import RawEvent, Source, SourceKind
from scraper.base import (
    ScrapeResult,
    SourceAdapter,
    SourceConfigError,
    build_date_window,
    google_maps_search_url,
    in_window,
    validate_source_config,
)

logger = logging.getLogger(__name__)

SHEETS_API_URL = 'https://sheets.googleapis.com/v4/spreadsheets/{sheet_id}'
CSV_EXPORT_URL = 'https://docs.google.com/spreadsheets/d/{sheet_id}/gviz/tq?tqx=out:csv&sheet={tab}'

SAMPLE_ROW_LIMIT = 10
MAX_DESCRIPTION_LENGTH = 2000
WEEKDAYS = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')

_DATE_SPLIT = re.compile(r'[/-]')


def parse_sheet_date(value: str) -> Optional[str]:
    """
    Parse M/D/YY, M-D-YY or M/D/YYYY into YYYY-MM-DD.

    Two-digit years below 50 are 20xx, the rest 19xx.
    """
    parts = _DATE_SPLIT.split((value or '').strip())
    if len(parts) != 3:
        return None
    try:
        month, day, year = (int(part) for part in parts)
    except ValueError:
        return None
    if year <= 99:
        year += 2000 if year < 50 else 1900
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def infer_start_time(event_date: str, rules: Optional[Dict]) -> Optional[str]:
    """Pick a start time from day-of-week rules such as {"byDayOfWeek": {"Sat": "15:00"}}."""
    if not rules:
        return None
    weekday = WEEKDAYS[date.fromisoformat(event_date).weekday()]
    return (rules.get('byDayOfWeek') or {}).get(weekday) or rules.get('default')


def _cell(row: List[str], index: Optional[int]) -> Optional[str]:
    if index is None or index >= len(row):
        return None
    return row[index].strip() or None


class GoogleSheetsAdapter(SourceAdapter):
    """Reads one row per run from year-named tabs of a shared spreadsheet."""

    kind = SourceKind.GOOGLE_SHEETS

    def __init__(self, timeout: int = 30, api_key: Optional[str] = None):
        super().__init__(timeout=timeout)
        self.api_key = api_key or os.environ.get('GOOGLE_API_KEY')

    def fetch(self, source: Source, days: int = 90) -> ScrapeResult:
        result = ScrapeResult()
        try:
            config = validate_source_config(
                source.config,
                'GoogleSheetsAdapter',
                {'sheetId': str, 'columns': dict, 'kennelTagRules': dict}
            )
        except SourceConfigError as e:
            result.add_fetch_error(str(e))
            return result

        tabs = config.get('tabs') or self._discover_tabs(config['sheetId'], result)
        if tabs is None:
            return result

        window = build_date_window(days)
        tabs_processed = []
        rows_per_tab = {}

        for tab in tabs:
            rows = self._fetch_tab(config['sheetId'], tab, result)
            if rows is None:
                continue
            tabs_processed.append(tab)
            rows_per_tab[tab] = len(rows)
            if result.sample_rows is None:
                result.sample_rows = rows[:SAMPLE_ROW_LIMIT]

            tab_in_window = False
            for index, row in enumerate(rows[1:], start=1):
                try:
                    event = self._parse_row(row, config, source, window)
                except (ValueError, KeyError, TypeError) as e:
                    result.add_parse_error(f"Row {index} in tab '{tab}': {e}", row=index)
                    continue
                if event is None:
                    continue
                tab_in_window = True
                result.events.append(event)

            # Tabs are newest first; an older tab with nothing in range ends the walk
            if not tab_in_window and result.events:
                break

        result.diagnostic_context = {
            'tabs_discovered': list(tabs),
            'tabs_processed': tabs_processed,
            'rows_per_tab': rows_per_tab,
        }
        logger.info(f"Google Sheets source {source.id} produced {len(result.events)} events")
        return result

    def _discover_tabs(self, sheet_id: str, result: ScrapeResult) -> Optional[List[str]]:
        if not self.api_key:
            result.add_fetch_error('Missing GOOGLE_API_KEY for tab discovery')
            return None
        url = SHEETS_API_URL.format(sheet_id=sheet_id)
        try:
            response = self._get(url, params={'fields': 'sheets.properties.title', 'key': self.api_key})
        except requests.RequestException as e:
            result.add_fetch_error(f"Failed to discover tabs: {e}", url=url)
            return None
        if not response.ok:
            result.add_fetch_error(
                f"Sheets API error {response.status_code}: {response.text[:200]}",
                url=url,
                status=response.status_code
            )
            return None
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            result.add_fetch_error('Sheets API returned a non-JSON response', url=url, status=response.status_code)
            return None
        titles = [
            sheet.get('properties', {}).get('title', '')
            for sheet in data.get('sheets', [])
        ]
        return sorted((title for title in titles if title[:1].isdigit()), reverse=True)

    def _fetch_tab(self, sheet_id: str, tab: str, result: ScrapeResult) -> Optional[List[List[str]]]:
        url = CSV_EXPORT_URL.format(sheet_id=sheet_id, tab=quote(tab, safe=''))
        try:
            response = self._get(url)
        except requests.RequestException as e:
            result.add_fetch_error(f"Error fetching tab '{tab}': {e}", url=url)
            return None
        if not response.ok:
            result.add_fetch_error(
                f"Failed to fetch tab '{tab}': {response.status_code}",
                url=url,
                status=response.status_code
            )
            return None
        reader = csv.reader(io.StringIO(response.text))
        return [row for row in reader if any(cell.strip() for cell in row)]

    def _parse_row(self, row, config, source: Source, window) -> Optional[RawEvent]:
        columns = config['columns']
        rules = config['kennelTagRules']

        event_date = parse_sheet_date(_cell(row, columns.get('date')) or '')
        if event_date is None or not in_window(event_date, window):
            return None

        run_cell = _cell(row, columns.get('runNumber'))
        special_cell = _cell(row, columns.get('specialRun'))
        special_map = rules.get('specialRunMap') or {}

        if special_cell and special_cell in special_map:
            tag = special_map[special_cell]
            run_number = int(run_cell) if run_cell and run_cell.isdigit() else None
        elif special_cell and special_cell.isdigit() and rules.get('numericSpecialTag'):
            tag = rules['numericSpecialTag']
            run_number = int(special_cell)
        elif run_cell and run_cell.isdigit():
            tag = rules['default']
            run_number = int(run_cell)
        else:
            return None

        location = _cell(row, columns.get('location'))
        description = _cell(row, columns.get('description'))
        return RawEvent(
            date=event_date,
            group_tag=tag,
            title=_cell(row, columns.get('title')),
            description=description[:MAX_DESCRIPTION_LENGTH] if description else None,
            hares=_cell(row, columns.get('hares')),
            location=location,
            location_url=google_maps_search_url(location) if location else None,
            start_time=infer_start_time(event_date, config.get('startTimeRules')),
            run_number=run_number,
            source_url=source.url,
        )
