"""
Symbol master and alias handling
"""

from marketpulse.symbols.symbol_master import AliasKind, SymbolMaster, SymbolSnapshot

__all__ = ["AliasKind", "SymbolMaster", "SymbolSnapshot"]
