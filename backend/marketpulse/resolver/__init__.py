from marketpulse.resolver.ticker_resolver import TickerResolver
from marketpulse.resolver.vocabulary import Vocabulary

__all__ = ["TickerResolver", "Vocabulary"]
