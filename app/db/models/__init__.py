from .common import *  # noqa
from .commerce import *  # noqa
from .production import *  # noqa
from .insights import *  # noqa
from .security_audit import *  # noqa

# Event-bus tables (transactional outbox + webhook subscriptions)
from app.events.outbox import *  # noqa
from app.events.subscriptions import *  # noqa
