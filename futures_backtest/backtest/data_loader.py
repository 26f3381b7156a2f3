"""Historical Data Loader - Reads and caches historical kline files.

Loads klines from local JSON or CSV exports so they can be fed to a runner.
The runner itself never fetches data.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from ..exceptions import DataLoadError
from ..models.market_data import Kline

REQUIRED_COLUMNS = ["timestamp", "open", "high", "low", "close"]


class HistoricalDataLoader:
    """Loads and caches historical klines for backtesting.

    Features:
    - JSON files: list of kline objects, or ccxt/Binance lists
    - CSV files via pandas (timestamp,open,high,low,close[,volume])
    - Local JSON cache keyed by symbol and interval

    Example:
        >>> loader = HistoricalDataLoader(Path("data/historical"))
        >>> klines = loader.load_file(Path("BTCUSDT_1h.csv"))
        >>> loader.save_to_cache("BTCUSDT", "1h", klines)
    """

    def __init__(self, cache_dir: Optional[Path] = None):
        """Initialize data loader.

        Args:
            cache_dir: Directory for data cache (defaults to data/historical/)
        """
        self.logger = logging.getLogger(__name__)

        if cache_dir is None:
            cache_dir = Path("data/historical")

        # Created on first save
        self.cache_dir = Path(cache_dir)

    def load_file(self, path: Path) -> List[Kline]:
        """Load klines from a .json or .csv file.

        Returns:
            Klines sorted by timestamp, duplicates removed (last one wins)

        Raises:
            DataLoadError: If the file is missing, malformed or has an
                unsupported extension
        """
        path = Path(path)
        if not path.exists():
            raise DataLoadError(f"Kline file not found: {path}")

        suffix = path.suffix.lower()
        try:
            if suffix == ".json":
                klines = self._load_json(path)
            elif suffix == ".csv":
                klines = self._load_csv(path)
            else:
                raise DataLoadError(f"Unsupported kline file type: {path.suffix}")
        except (OSError, ValueError, KeyError, TypeError, IndexError) as e:
            raise DataLoadError(f"Cannot read klines from {path}: {e}") from e

        klines = _sort_unique(klines)
        self.logger.info(f"Loaded {len(klines)} klines from {path.name}")
        return klines

    def _load_json(self, path: Path) -> List[Kline]:
        with open(path, "r") as f:
            data = json.load(f)

        if isinstance(data, dict):
            data = data.get("klines", [])

        return [
            Kline.from_ccxt(row) if isinstance(row, (list, tuple)) else Kline.from_dict(row)
            for row in data
        ]

    def _load_csv(self, path: Path) -> List[Kline]:
        df = pd.read_csv(path)
        df.columns = [str(c).strip().lower() for c in df.columns]

        if "timestamp" not in df.columns and "open_time" in df.columns:
            df = df.rename(columns={"open_time": "timestamp"})

        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"missing columns: {', '.join(missing)}")

        if not pd.api.types.is_numeric_dtype(df["timestamp"]):
            parsed = pd.to_datetime(df["timestamp"], utc=True)
            epoch = pd.Timestamp("1970-01-01", tz="UTC")
            df["timestamp"] = (parsed - epoch) // pd.Timedelta(milliseconds=1)

        if "volume" not in df.columns:
            df["volume"] = 0.0

        return [
            Kline(
                timestamp=int(row.timestamp),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume),
            )
            for row in df.itertuples(index=False)
        ]

    def _get_cache_filepath(self, symbol: str, interval: str) -> Path:
        symbol_safe = symbol.replace("/", "_")
        return self.cache_dir / f"{symbol_safe}_{interval}.json"

    def load_from_cache(self, symbol: str, interval: str) -> Optional[List[Kline]]:
        """Load cached klines, or None when nothing usable is cached."""
        filepath = self._get_cache_filepath(symbol, interval)

        if not filepath.exists():
            return None

        try:
            with open(filepath, "r") as f:
                data = json.load(f)
            klines = [Kline.from_dict(candle) for candle in data]
        except (OSError, ValueError, KeyError, TypeError) as e:
            self.logger.warning(f"Failed to load cache {filepath.name}: {e}")
            return None

        self.logger.debug(f"Loaded {len(klines)} klines from cache: {filepath.name}")
        return klines

    def save_to_cache(self, symbol: str, interval: str, klines: Iterable[Kline]) -> Path:
        """Save klines to cache, replacing any previous entry."""
        filepath = self._get_cache_filepath(symbol, interval)
        data = [candle.to_dict() for candle in _sort_unique(klines)]

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with open(filepath, "w") as f:
                json.dump(data, f)
        except OSError as e:
            raise DataLoadError(f"Cannot write cache {filepath}: {e}") from e

        self.logger.debug(f"Saved {len(data)} klines to cache: {filepath.name}")
        return filepath

    def clear_cache(self, symbol: Optional[str] = None):
        """Clear cached data.

        Args:
            symbol: If provided, only clear cache for this symbol.
                   If None, clear entire cache.
        """
        if symbol is None:
            for filepath in self.cache_dir.glob("*.json"):
                filepath.unlink()
            self.logger.info("Cleared entire cache")
        else:
            symbol_safe = symbol.replace("/", "_")
            for filepath in self.cache_dir.glob(f"{symbol_safe}_*.json"):
                filepath.unlink()
            self.logger.info(f"Cleared cache for {symbol}")

    def get_cache_info(self) -> Dict[str, Any]:
        """Get information about cached data.

        Returns:
            Dictionary with cache statistics
        """
        cache_files = sorted(self.cache_dir.glob("*.json"))

        total_size = sum(f.stat().st_size for f in cache_files)

        return {
            "cache_dir": str(self.cache_dir),
            "total_files": len(cache_files),
            "total_size_mb": total_size / (1024 * 1024),
            "files": [f.name for f in cache_files],
        }


def _sort_unique(klines: Iterable[Kline]) -> List[Kline]:
    unique = {k.timestamp: k for k in klines}
    return [unique[ts] for ts in sorted(unique)]
