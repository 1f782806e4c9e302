from marketpulse.scanners.engine import ScannerEngine, ScanSnapshot
from marketpulse.scanners.presets import ScannerThresholds
from marketpulse.scanners.universe import UniverseBuilder

__all__ = ["ScannerEngine", "ScanSnapshot", "ScannerThresholds", "UniverseBuilder"]
