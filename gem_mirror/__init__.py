"""Mirror a remote gem repository into a local directory tree."""
__version__ = "1.0.0"

from .config import MirrorConfig, load_config
from .errors import (ConfigError, DestinationInvalid, IndexUnavailable,
                     ItemError, ItemPermanentError, ItemTransientError,
                     MirrorError)
from .mirror import Mirror, run_sync
from .models import (ErrorPolicy, Kind, OutcomeStatus, PackageRef, Phase,
                     RunReport, RunState, SyncPlan, TaskOutcome)
