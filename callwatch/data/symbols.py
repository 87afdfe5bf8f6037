"""
Exchange code mapping between posts and Yahoo Finance tickers.
"""

from typing import Optional


# Exchange code -> (Yahoo Finance suffix, country)
EXCHANGES: dict[str, tuple[str, str]] = {
    "US": ("", "USA"),
    "NYSE": ("", "USA"),
    "NASDAQ": ("", "USA"),
    "EGX": ("CA", "Egypt"),
    "LSE": ("L", "UK"),
    "TO": ("TO", "Canada"),
    "AX": ("AX", "Australia"),
    "DE": ("DE", "Germany"),
    "PA": ("PA", "France"),
    "MC": ("MC", "Spain"),
    "SS": ("SS", "China"),
    "HK": ("HK", "Hong Kong"),
    "NS": ("NS", "India"),
    "T": ("T", "Japan"),
    "SA": ("SA", "Brazil"),
    "MX": ("MX", "Mexico"),
    "JO": ("JO", "South Africa"),
    "SW": ("SW", "Switzerland"),
    "AS": ("AS", "Netherlands"),
    "LS": ("LS", "Portugal"),
    "IR": ("IR", "Ireland"),
    "HE": ("HE", "Finland"),
    "OL": ("OL", "Norway"),
    "CO": ("CO", "Denmark"),
    "ST": ("ST", "Sweden"),
    "VI": ("VI", "Austria"),
    "BR": ("BR", "Belgium"),
    "MI": ("MI", "Italy"),
    "WAR": ("WA", "Poland"),
    "AT": ("AT", "Greece"),
    "IS": ("IS", "Turkey"),
    "KO": ("KS", "Korea"),
    "JK": ("JK", "Indonesia"),
    "BK": ("BK", "Thailand"),
    "SI": ("SI", "Singapore"),
    "KL": ("KL", "Malaysia"),
    "SR": ("SR", "Saudi Arabia"),
}


def split_symbol(symbol: str) -> tuple[str, Optional[str]]:
    """
    Split a symbol like "2222.SR" into its base and exchange suffix.

    Args:
        symbol: Symbol as typed by the post author

    Returns:
        (base, suffix) where suffix is None for plain symbols
    """
    symbol = symbol.strip().upper()
    if "." in symbol:
        base, _, suffix = symbol.rpartition(".")
        if base and suffix:
            return base, suffix
    return symbol, None


def to_yahoo_ticker(symbol: str, exchange: Optional[str] = None) -> str:
    """
    Build the Yahoo Finance ticker for a symbol listed on an exchange.

    A suffix already present on the symbol wins over the exchange field.
    Unknown exchange codes are passed through as the suffix.
    """
    base, suffix = split_symbol(symbol)
    code = (suffix or exchange or "US").upper()

    if code in EXCHANGES:
        yahoo_suffix = EXCHANGES[code][0]
    else:
        yahoo_suffix = code

    return f"{base}.{yahoo_suffix}" if yahoo_suffix else base


def country_for(symbol: str, exchange: Optional[str] = None) -> Optional[str]:
    """Derive the country of a listing from its symbol suffix or exchange code."""
    _, suffix = split_symbol(symbol)
    for code in (suffix, exchange):
        if code and code.upper() in EXCHANGES:
            return EXCHANGES[code.upper()][1]
    return None
