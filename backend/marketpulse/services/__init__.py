from marketpulse.services.market_data_plane import (
    MarketDataPlane,
    build_plane,
    init_plane,
    plane_context,
    shutdown_plane,
)

__all__ = ["MarketDataPlane", "build_plane", "init_plane", "plane_context", "shutdown_plane"]
