"""
Director — A Live-Stream "Director" Mini-Game Engine
=====================================================
Viewers tip toward tip-menu items to build power, the top viewer takes the
director's chair and issues timed on-screen commands, and a challenger can
overtake once the tenure window has passed and the lead margin is met.

Package layout::

    director/
    ├── config.py          # YAML → typed host config
    ├── constants.py       # Command catalog, capacities, text helpers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # director_sessions table
    ├── engine/
    │   ├── settings.py    # Settings normalizer
    │   ├── tip_menu.py    # Tip-menu normalizer
    │   ├── bounded.py     # Fixed-capacity sequences
    │   ├── state.py       # Game data model
    │   ├── events.py      # Inbound event union + parsing
    │   ├── goals.py       # Goal derivation + allocation pruning
    │   ├── leadership.py  # Director / challenger protocol
    │   ├── session.py     # SessionEngine: the state machine
    │   └── reconciler.py  # Snapshot merge / persist / hydrate
    ├── services/
    │   ├── bus.py             # Message bus protocol + local bus
    │   ├── local_store.py     # Local fast snapshot cache
    │   ├── remote_store.py    # Remote session API client
    │   ├── session_store.py   # Server-side session storage
    │   └── tip_menu_lookup.py # External tip-menu fallback chain
    ├── host/
    │   ├── core.py        # DirectorHost: wiring + periodic loops
    │   └── __main__.py    # python -m director.host
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Store + API key dependencies
        └── routes/        # sessions, tip-menu
"""

__version__ = "0.1.0"
