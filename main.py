"""
H2H Analytics Backend - entry point and re-exports.

Code lives in h2h_analytics/ modules:
- config.py:      MODEL_CONFIG + dataclass configs (scoring, auto-sub, luck presets)
- constants.py:   Positions, chips, gameweek bounds, validation helpers
- errors.py:      Engine error taxonomy
- models.py:      Dataclasses, Result type, pydantic response schemas
- calculators.py: Points calculator and provider audit
- status.py:      Gameweek status resolver
- aggregator.py:  Live score aggregator with auto-subs
- luck.py:        Four-component luck engine
- context.py:     Per-request context
- store.py:       Persisted aggregate store
- sources.py:     Live vs persisted score routing
- services.py:    HTTP client, upstream feed, league orchestration
- chips.py:       Chip availability rules
- audit.py:       Gameweek points audit
- endpoints.py:   FastAPI app + API endpoints

Star-imports re-export everything so `from main import X` works.
"""

import logging
import os

from h2h_analytics.config import *       # noqa: F401,F403
from h2h_analytics.constants import *    # noqa: F401,F403
from h2h_analytics.errors import *       # noqa: F401,F403
from h2h_analytics.models import *       # noqa: F401,F403
from h2h_analytics.calculators import *  # noqa: F401,F403
from h2h_analytics.status import *       # noqa: F401,F403
from h2h_analytics.aggregator import *   # noqa: F401,F403
from h2h_analytics.luck import *         # noqa: F401,F403
from h2h_analytics.services import *     # noqa: F401,F403
from h2h_analytics.endpoints import app  # noqa: F401

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=os.environ.get("H2H_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
