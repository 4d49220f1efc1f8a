"""Parsing and decomposition of 591 rental search URLs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .errors import InvalidUrlError

SUPPORTED_DOMAIN = "591.com.tw"
RENT_HOST = "rent.591.com.tw"
STATION_PARAM = "station"

REGION_NAMES = {
    "1": "台北市",
    "2": "基隆市",
    "3": "新北市",
    "4": "宜蘭縣",
    "5": "桃園市",
    "6": "新竹縣",
    "7": "新竹市",
    "8": "苗栗縣",
    "9": "台中市",
    "10": "彰化縣",
    "11": "南投縣",
    "12": "嘉義市",
    "13": "嘉義縣",
    "14": "雲林縣",
    "15": "台南市",
    "16": "高雄市",
    "17": "澎湖縣",
    "18": "金門縣",
    "19": "屏東縣",
    "20": "台東縣",
    "21": "花蓮縣",
    "22": "連江縣",
}

KIND_NAMES = {
    "0": "所有類型",
    "1": "整層住家",
    "2": "雅房",
    "3": "分租套房",
    "4": "車位",
    "8": "其他",
}


@dataclass(frozen=True)
class SearchUrl:
    """A validated search-result URL and the fields derived from it."""

    url: str
    params: Tuple[Tuple[str, str], ...]
    stations: Tuple[str, ...]

    @classmethod
    def parse(cls, raw: object) -> "SearchUrl":
        if not isinstance(raw, str) or not raw.strip():
            raise InvalidUrlError(raw, "URL must be a non-empty string")
        url = raw.strip()
        try:
            parts = urlsplit(url)
            hostname = (parts.hostname or "").lower()
        except ValueError as exc:
            raise InvalidUrlError(url, f"malformed URL ({exc})") from exc

        if parts.scheme not in ("http", "https"):
            raise InvalidUrlError(url, "scheme must be http or https")
        if hostname != SUPPORTED_DOMAIN and not hostname.endswith("." + SUPPORTED_DOMAIN):
            raise InvalidUrlError(url, f"host {hostname or '<empty>'} is not a {SUPPORTED_DOMAIN} site")
        if not _is_rent_search_path(hostname, parts.path):
            raise InvalidUrlError(url, f"path {parts.path or '/'} is not a rental search page")

        params = tuple(parse_qsl(parts.query, keep_blank_values=True))
        return cls(url=url, params=params, stations=_station_ids(params))

    @staticmethod
    def is_valid(raw: object) -> bool:
        try:
            SearchUrl.parse(raw)
        except InvalidUrlError:
            return False
        return True

    @property
    def is_multi_station(self) -> bool:
        return len(self.stations) > 1

    @property
    def station(self) -> str | None:
        """The station this URL is scoped to, when there is exactly one."""
        return self.stations[0] if len(self.stations) == 1 else None

    @property
    def region(self) -> str | None:
        return self.get("region")

    @property
    def metro(self) -> str | None:
        return self.get("metro")

    @property
    def kind(self) -> str | None:
        return self.get("kind")

    def get(self, name: str) -> str | None:
        for key, value in self.params:
            if key == name:
                return value
        return None

    def decompose(self) -> List["SearchUrl"]:
        """Split a multi-station URL into one single-station URL per station."""
        if not self.is_multi_station:
            return [self]
        return [self.with_station(station_id) for station_id in self.stations]

    def with_station(self, station_id: str) -> "SearchUrl":
        params: List[Tuple[str, str]] = []
        inserted = False
        for key, value in self.params:
            if key != STATION_PARAM:
                params.append((key, value))
            elif not inserted:
                params.append((STATION_PARAM, station_id))
                inserted = True
        if not inserted:
            params.append((STATION_PARAM, station_id))
        parts = urlsplit(self.url)
        rebuilt = urlunsplit(
            (parts.scheme, parts.netloc, parts.path, urlencode(params, safe=","), parts.fragment)
        )
        return SearchUrl.parse(rebuilt)

    @property
    def query_id(self) -> str:
        """Deterministic key identifying the search criteria of this URL."""
        normalized = self._normalized_params()
        components = []
        if normalized.get("region"):
            components.append(f"region{normalized['region']}")
        if normalized.get("kind"):
            components.append(f"kind{normalized['kind']}")
        if self.stations:
            components.append("stations" + "-".join(sorted(self.stations)))
        elif normalized.get("metro"):
            components.append(f"metro{normalized['metro']}")
        if normalized.get("price"):
            components.append(f"price{normalized['price']}")
        if normalized.get("section"):
            components.append("section" + "-".join(sorted(_split(normalized["section"]))))
        if normalized.get("rooms"):
            components.append("rooms" + "-".join(sorted(_split(normalized["rooms"]))))
        if normalized.get("floor"):
            components.append(f"floor{normalized['floor']}")
        return "_".join(components) or "unknown"

    @property
    def description(self) -> str:
        normalized = self._normalized_params()
        parts = []
        region = normalized.get("region")
        if region:
            parts.append(REGION_NAMES.get(region, f"區域{region}"))
        kind = normalized.get("kind")
        if kind and kind != "0":
            parts.append(KIND_NAMES.get(kind, f"類型{kind}"))
        if len(self.stations) == 1:
            parts.append(f"近捷運站{self.stations[0]}")
        elif self.stations:
            parts.append(f"近{len(self.stations)}個捷運站")
        elif normalized.get("metro"):
            parts.append(f"捷運{normalized['metro']}線")
        price = normalized.get("price")
        if price:
            parts.append(_describe_price(price))
        return " ".join(part for part in parts if part) or "所有租屋"

    def to_dict(self) -> Dict[str, object]:
        return {
            "url": self.url,
            "stations": list(self.stations),
            "multi_station": self.is_multi_station,
            "region": self.region,
            "metro": self.metro,
            "query_id": self.query_id,
            "description": self.description,
        }

    def _normalized_params(self) -> Dict[str, str]:
        aliases = {
            "rentprice": "price",
            "price": "price",
            "multiRoom": "rooms",
            "layout": "rooms",
            "section": "section",
            "region": "region",
            "kind": "kind",
            "metro": "metro",
            "floor": "floor",
        }
        normalized: Dict[str, str] = {}
        for key, value in self.params:
            target = aliases.get(key)
            if target and value and target not in normalized:
                normalized[target] = value.strip()
        return normalized

    def __str__(self) -> str:
        return self.url


def _is_rent_search_path(hostname: str, path: str) -> bool:
    path = path or "/"
    if hostname == RENT_HOST:
        return path.rstrip("/") in ("", "/list")
    return path.startswith("/rent")


def _station_ids(params: Sequence[Tuple[str, str]]) -> Tuple[str, ...]:
    stations: List[str] = []
    for key, value in params:
        if key != STATION_PARAM:
            continue
        for token in value.split(","):
            token = token.strip()
            if token and token not in stations:
                stations.append(token)
    return tuple(stations)


def _split(value: str) -> List[str]:
    return [token.strip() for token in value.split(",") if token.strip()]


def _describe_price(price: str) -> str:
    bounds = price.replace("_", ",").split(",")
    if len(bounds) != 2:
        return f"租金{price}"
    try:
        low, high = int(bounds[0] or 0), int(bounds[1] or 0)
    except ValueError:
        return f"租金{price}"
    if low > 0 and high > low:
        return f"{low:,}-{high:,}元"
    if low > 0:
        return f"{low:,}元以上"
    if high > 0:
        return f"{high:,}元以下"
    return ""


__all__ = ["SearchUrl", "STATION_PARAM"]
