"""
Ticker allow-list used by the asset detector.

A symbol recovered from statement text is only accepted when it appears
here; everything else (exchange labels, column headers, OCR noise) is
dropped. The list is configuration data and can be replaced with an
external file via the SYMBOLS_FILE setting.
"""

import logging
import re
from pathlib import Path

logger = logging.getLogger('portfolio_tracker.symbols')

# 1-5 letters, optionally a share class suffix (BRK.B, BF.A)
SYMBOL_PATTERN = re.compile(r'^[A-Z]{1,5}(?:\.[A-Z])?$')

_SYMBOL_GROUPS = {
    'tech': [
        'AAPL', 'MSFT', 'GOOGL', 'GOOG', 'AMZN', 'TSLA', 'NVDA', 'META', 'NFLX', 'ADBE',
        'CRM', 'ORCL', 'INTC', 'AMD', 'QCOM', 'AVGO', 'CSCO', 'ACN', 'TXN', 'IBM',
        'UBER', 'PYPL', 'SQ', 'ZM', 'SHOP', 'SNOW', 'PLTR', 'MU', 'AMAT', 'NOW',
    ],
    'us_equity_etfs': [
        'SPY', 'QQQ', 'VTI', 'VOO', 'IVV', 'DIA', 'IWM', 'IWF', 'IWD', 'VIG', 'VYM',
        'HDV', 'SCHD', 'SCHA', 'SCHB', 'SCHF', 'SCHE', 'SCHX', 'SCHY', 'SCHG', 'SCHV',
        'SPYI', 'SPMD', 'SPSM', 'SPLG', 'SPTM', 'SPYG', 'SPYV', 'VB', 'VV', 'VO', 'VBR',
        'VBK', 'VOE', 'VOT', 'VTV', 'VUG', 'MGK', 'MGV', 'ITOT', 'IJH', 'IJR', 'IWB',
        'IWR', 'IWS', 'IWN', 'IWO', 'IWP', 'JEPI', 'JEPQ', 'QYLD',
    ],
    'bond_etfs': [
        'SGOV', 'AGG', 'BND', 'BNDX', 'VTIP', 'STIP', 'TIP', 'SCHZ', 'SCHP', 'EMB',
        'VWOB', 'LQD', 'HYG', 'JNK', 'MUB', 'TLT', 'IEF', 'SHY', 'GOVT', 'VCIT', 'VCSH',
        'BSV', 'BIV', 'BLV', 'VMBS', 'MBB', 'IGIB', 'IGSB', 'BIL', 'SHV',
    ],
    'sector_etfs': [
        'XLK', 'XLF', 'XLE', 'XLV', 'XLI', 'XLY', 'XLP', 'XLU', 'XLB', 'XLRE', 'VGT',
        'VFH', 'VDE', 'VHT', 'VIS', 'VCR', 'VDC', 'VPU', 'VAW', 'VNQ', 'GLD', 'SLV',
        'ARKK', 'ARKW', 'ARKG', 'ARKF', 'ARKQ',
    ],
    'international': [
        'VEA', 'VWO', 'IEFA', 'IEMG', 'EFA', 'EEM', 'VXUS', 'VEU', 'VSS', 'VGK', 'IXUS',
        'ACWI', 'ACWX', 'VPL', 'MCHI', 'EWZ', 'FXI', 'EWJ', 'EWG', 'EWU', 'EWC', 'EWA',
        'EWH', 'EWS', 'EWT', 'EWY', 'EWL', 'EWN', 'EWO', 'EWP', 'EWQ', 'EWW', 'EWD',
        'EWI', 'EWK', 'EWM', 'INDA', 'TSM', 'BABA', 'NVS', 'SNY', 'GSK', 'AZN', 'NVO',
        'RHHBY', 'TAK', 'SONY', 'TM', 'SAP', 'ASML', 'SHEL', 'BP', 'STLA', 'MELI',
    ],
    'crypto': [
        'IBIT', 'ETHA', 'GBTC', 'FBTC', 'ARKB', 'BITB', 'ETHE', 'BTC', 'ETH', 'SOL',
        'DOGE', 'ADA', 'XRP', 'DOT', 'AVAX', 'MATIC', 'LINK', 'LTC',
    ],
    'consumer': [
        'NKE', 'WMT', 'PG', 'KO', 'PEP', 'DIS', 'HD', 'MCD', 'SBUX', 'COST', 'TGT',
        'LOW', 'MNST', 'KDP', 'CCEP', 'FIZZ', 'CELH', 'KOF', 'FMX', 'ABEV', 'STZ',
        'TAP', 'SAM', 'BUD', 'HEINY', 'DEO', 'BF.A', 'BF.B', 'PM', 'MO', 'CL', 'KMB',
        'GIS', 'K', 'HSY', 'MDLZ',
    ],
    'financials': [
        'BRK.A', 'BRK.B', 'JPM', 'BAC', 'WFC', 'C', 'GS', 'MS', 'AXP', 'BLK', 'SCHW',
        'USB', 'PNC', 'TFC', 'COF', 'AON', 'MMC', 'SPGI', 'MCO', 'FIS', 'FISV', 'GPN',
        'JKHY', 'NDAQ', 'TROW', 'WU', 'V', 'MA', 'BK', 'SUPV', 'BBVA', 'SAN', 'ITUB',
    ],
    'energy': [
        'XOM', 'CVX', 'COP', 'EOG', 'SLB', 'KMI', 'OKE', 'WMB', 'PSX', 'VLO', 'MPC',
        'HES', 'DVN', 'PXD', 'NOV', 'HAL', 'BKR', 'FTI', 'RIG', 'HP', 'NBR', 'PTEN',
        'LBRT', 'OXY', 'YPF', 'PBR', 'CCJ', 'UEC',
    ],
    'healthcare': [
        'JNJ', 'PFE', 'ABBV', 'MRK', 'TMO', 'ABT', 'DHR', 'BMY', 'AMGN', 'GILD',
        'BIIB', 'REGN', 'VRTX', 'ILMN', 'MRNA', 'BNTX', 'ZTS', 'CVS', 'UNH', 'CI',
        'HUM', 'ELV', 'WBA', 'MCK', 'CAH', 'HSIC', 'PDCO', 'DGX', 'LH', 'A', 'BDX',
        'BSX', 'EW', 'ISRG', 'MDT', 'SYK', 'ZBH', 'BAX', 'LLY',
    ],
    'industrials': [
        'GE', 'CAT', 'BA', 'MMM', 'HON', 'UPS', 'FDX', 'DE', 'LMT', 'RTX', 'NOC',
        'F', 'GM', 'T', 'VZ', 'TMUS',
    ],
}


def _build_default_symbols():
    symbols = set()
    for group in _SYMBOL_GROUPS.values():
        symbols.update(symbol.upper() for symbol in group)
    return frozenset(symbols)


DEFAULT_SYMBOLS = _build_default_symbols()


def load_symbols(path):
    """
    Load an allow-list from a text file: one ticker per line, blank lines
    and '#' comments ignored. Entries are uppercased and de-duplicated;
    entries that are not ticker-shaped are skipped with a warning.
    """
    symbols = set()
    text = Path(path).read_text(encoding='utf-8')

    for line_number, raw in enumerate(text.splitlines(), start=1):
        entry = raw.split('#', 1)[0].strip().upper()
        if not entry:
            continue
        if not SYMBOL_PATTERN.match(entry):
            logger.warning("Skipping invalid symbol %r on line %d of %s", entry, line_number, path)
            continue
        symbols.add(entry)

    logger.info("Loaded %d symbols from %s", len(symbols), path)
    return frozenset(symbols)


def is_known_symbol(symbol, symbols=None):
    if not symbol:
        return False
    allowed = DEFAULT_SYMBOLS if symbols is None else symbols
    return symbol.strip().upper() in allowed
