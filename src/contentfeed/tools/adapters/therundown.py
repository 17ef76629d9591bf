"""TheRundown game schedule and scores through RapidAPI.

One ``fetch()`` asks for today's events of each configured sport. A sport
that fails is logged and left out; only a fetch where every sport fails is
an error.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from contentfeed.errors import FetchError
from contentfeed.models.ingestion import NormalizedItem
from contentfeed.tools.adapters.base import RapidApiAdapter, as_text, at_path, parse_date

THERUNDOWN_URL = "https://therundown-therundown-v1.p.rapidapi.com"
THERUNDOWN_HOST = "therundown-therundown-v1.p.rapidapi.com"

DEFAULT_SPORTS: tuple[tuple[str, str], ...] = (
    ("4", "NBA"),
    ("6", "NHL"),
    ("5", "NCAA Basketball"),
    ("3", "MLB"),
    ("2", "NFL"),
)

FINAL_STATUS = "STATUS_FINAL"
LIVE_STATUSES = frozenset({"STATUS_IN_PROGRESS", "STATUS_HALFTIME"})


class TheRundownAdapter(RapidApiAdapter):
    source_key = "therundown"
    record_extractors = (at_path("events"),)

    def __init__(
        self,
        *,
        base_url: str = THERUNDOWN_URL,
        host: str = THERUNDOWN_HOST,
        sports: Sequence[tuple[str, str]] = DEFAULT_SPORTS,
        **kwargs: Any,
    ) -> None:
        super().__init__(host=host, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.sports = tuple(sports)

    @property
    def calls_per_fetch(self) -> int:
        return len(self.sports)

    def fetch(self) -> Any:
        headers = self._rapidapi_headers()
        today = datetime.now(tz=UTC).date().isoformat()
        events: list[dict[str, Any]] = []
        failures: list[FetchError] = []
        for sport_id, sport_name in self.sports:
            try:
                payload = self._get_json(f"{self.base_url}/sports/{sport_id}/events/{today}", headers=headers)
            except FetchError as exc:
                self.log.warning("adapter.sport_failed", sport=sport_name, reason=str(exc))
                failures.append(exc)
                continue
            sport_events = payload.get("events") if isinstance(payload, Mapping) else None
            for event in sport_events or []:
                if isinstance(event, Mapping):
                    events.append({**event, "_sport_name": sport_name})
        if failures and len(failures) == len(self.sports):
            raise failures[-1]
        return {"events": events}

    def map_record(self, record: Mapping[str, Any]) -> NormalizedItem | None:
        teams = record.get("teams_normalized") or record.get("teams") or []
        if len(teams) < 2:
            return None

        away = next((team for team in teams if team.get("is_away")), teams[0])
        home = next((team for team in teams if team.get("is_home")), teams[1])
        score = record.get("score") or {}
        sport = record.get("_sport_name") or "Sports"
        event_status = score.get("event_status")
        status_detail = score.get("event_status_detail") or event_status or ""
        is_final = event_status == FINAL_STATUS
        is_live = event_status in LIVE_STATUSES

        away_name = _team_name(away)
        home_name = _team_name(home)
        if is_final:
            title = f"{away_name} {score.get('score_away')} - {home_name} {score.get('score_home')} (Final)"
        elif is_live:
            title = f"{away_name} {score.get('score_away') or 0} - {home_name} {score.get('score_home') or 0} (Live)"
        else:
            title = f"{away_name} at {home_name}"

        parts = [sport]
        venue = score.get("venue_name")
        if venue:
            location = score.get("venue_location")
            parts.append(f"{venue}, {location}" if location else venue)
        for team in (away, home):
            if team.get("record"):
                parts.append(f"{team.get('abbreviation') or team.get('name')} ({team['record']})")
        away_periods = score.get("score_away_by_period")
        home_periods = score.get("score_home_by_period")
        if is_final and away_periods and home_periods:
            parts.append(
                "Q: " + "-".join(map(str, away_periods)) + " / " + "-".join(map(str, home_periods))
            )
        if score.get("broadcast"):
            parts.append(f"TV: {score['broadcast']}")
        if status_detail and not is_final and not is_live:
            parts.append(status_detail)

        return NormalizedItem(
            title=title,
            source_url="",
            excerpt=" · ".join(parts),
            published_at=parse_date(score.get("updated_at") or record.get("event_date")),
            external_id=as_text(record.get("event_id")),
            content_type="sports",
            categories=[sport],
            raw_data=dict(record),
        )


def _team_name(team: Mapping[str, Any]) -> str:
    name = team.get("name") or ""
    mascot = team.get("mascot")
    return f"{name} {mascot}" if mascot else name
