"""
Widget kinds and their default settings.

Each kind that needs more than the generic defaults declares its own model;
``defaults_for`` picks the model by kind key and falls back to ``GenericDefaults``.
"""

import json
import re
from typing import Dict, List, Literal, Type

from pydantic import BaseModel

DEFAULT_ADDITIONAL_SETTINGS = "selectAll"

NEWS_SECTIONS: List[str] = [
    "DAX", "CAC", "SMI", "US Equities", "Asian Equities", "FTSE 100", "European Equities",
    "Global Equities", "UK Equities", "EUROSTOXX", "US Equity Plus",
    "US Data", "Swiss Data", "EU Data", "Canadian Data", "Other Data", "UK Data",
    "Other Central Banks", "BoC", "RBNZ", "RBA", "SNB", "BoJ", "BoE", "ECB", "PBoC", "Fed", "Bank Research",
    "Fixed Income", "Geopolitical", "Rating Agency comments", "Global News", "Market Analysis",
    "FX Flows", "Asian News", "Economic Commentary", "Brexit", "Energy & Power", "Metals",
    "Ags & Softs", "Crypto", "Emerging Markets", "US Election", "Trade", "Newsquawk Update",
]
NEWS_PRIORITIES: List[str] = ["Important", "Rumour", "Highlighted", "Normal"]


def _compact_json(value) -> str:
    return json.dumps(value, separators=(",", ":"))


def canonical_widget_name(title: str) -> str:
    """'Price Chart' -> 'price-chart'."""
    return re.sub(r"\s+", "-", title.strip().lower())


def widget_title(kind: str) -> str:
    """'price-chart' -> 'Price Chart'."""
    words = kind.replace("-", " ").split()
    return " ".join(w[:1].upper() + w[1:] for w in words)


# ── Defaults ──────────────────────────────────────────

class WidgetDefaults(BaseModel):
    """Module, symbols and additional settings used when the caller supplies none."""
    kind: str
    module: str = ""
    symbols: str = ""
    additional_settings: str = DEFAULT_ADDITIONAL_SETTINGS


class GenericDefaults(WidgetDefaults):
    kind: str = "generic"


class PriceChartDefaults(WidgetDefaults):
    kind: Literal["price-chart"] = "price-chart"
    module: str = "Forex"
    symbols: str = "EURUSD"
    additional_settings: str = "1|1|1h"


class ExponentialMovingAverageDefaults(WidgetDefaults):
    kind: Literal["exponential-moving-average"] = "exponential-moving-average"
    module: str = "Forex"
    symbols: str = "EURUSD"
    additional_settings: str = "Institutional|4h"


class SupertrendDefaults(WidgetDefaults):
    kind: Literal["supertrend"] = "supertrend"
    module: str = "Forex"
    symbols: str = "EURUSD"
    additional_settings: str = "4h"


class SupplyDemandAreasDefaults(WidgetDefaults):
    kind: Literal["supply-and-demand-areas"] = "supply-and-demand-areas"
    module: str = "Forex"
    symbols: str = "AUDCAD"
    additional_settings: str = "4h"


class HighLowPointsDefaults(WidgetDefaults):
    kind: Literal["high-and-low-points"] = "high-and-low-points"
    module: str = "Forex"
    symbols: str = "AUDCAD"
    additional_settings: str = "4h"


class SessionRangesDefaults(WidgetDefaults):
    kind: Literal["session-ranges"] = "session-ranges"
    module: str = "Forex"
    symbols: str = "EURUSD"


class PercentMonthlyTargetsDefaults(WidgetDefaults):
    kind: Literal["percent-monthly-targets"] = "percent-monthly-targets"
    module: str = "Forex"
    symbols: str = "EURUSD"


class CotTableViewDefaults(WidgetDefaults):
    kind: Literal["cot-table-view"] = "cot-table-view"
    additional_settings: str = "EUR|Dealer"


class CotChartViewDefaults(WidgetDefaults):
    kind: Literal["cot-chart-view"] = "cot-chart-view"
    additional_settings: str = _compact_json({
        "symbol": "EUR",
        "chartType": "bar chart",
        "cotDataType": "NetPercent",
        "cotOwner": "Dealer Intermediary",
    })


class RealtimeHeadlineTickerDefaults(WidgetDefaults):
    kind: Literal["realtime-headline-ticker"] = "realtime-headline-ticker"
    additional_settings: str = _compact_json({
        "newsSections": NEWS_SECTIONS,
        "newsPriorities": NEWS_PRIORITIES,
    })


class CurrencyStrengthDefaults(WidgetDefaults):
    kind: Literal["currency-strength"] = "currency-strength"
    additional_settings: str = _compact_json({
        "currencies": ["USD", "EUR", "JPY", "GBP", "AUD", "CHF", "CAD", "NZD"],
        "timeframe": "7d",
        "showVolume": 1,
    })


WIDGET_DEFAULTS: Dict[str, Type[WidgetDefaults]] = {
    model.model_fields["kind"].default: model
    for model in (
        PriceChartDefaults,
        ExponentialMovingAverageDefaults,
        SupertrendDefaults,
        SupplyDemandAreasDefaults,
        HighLowPointsDefaults,
        SessionRangesDefaults,
        PercentMonthlyTargetsDefaults,
        CotTableViewDefaults,
        CotChartViewDefaults,
        RealtimeHeadlineTickerDefaults,
        CurrencyStrengthDefaults,
    )
}


def defaults_for(kind: str) -> WidgetDefaults:
    """Return the default settings for a widget kind key."""
    model = WIDGET_DEFAULTS.get(kind)
    if model is None:
        return GenericDefaults(kind=kind)
    return model()
