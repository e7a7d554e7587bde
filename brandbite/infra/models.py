"""Central registry for SQLAlchemy models.

Importing this module loads every ORM class so relationships declared by
string name resolve and ``Base.metadata`` is complete for ``create_all`` and
Alembic autogenerate.
"""

from brandbite.domain.users import db_models as users_db_models  # noqa: F401
from brandbite.domain.catalog import db_models as catalog_db_models  # noqa: F401
from brandbite.domain.companies import db_models as companies_db_models  # noqa: F401
from brandbite.domain.creatives import db_models as creatives_db_models  # noqa: F401
from brandbite.domain.tickets import db_models as tickets_db_models  # noqa: F401
from brandbite.domain.ledger import db_models as ledger_db_models  # noqa: F401
from brandbite.domain.payouts import db_models as payouts_db_models  # noqa: F401
from brandbite.domain.withdrawals import db_models as withdrawals_db_models  # noqa: F401
from brandbite.domain.notifications import db_models as notifications_db_models  # noqa: F401
from brandbite.domain.app_settings import db_models as app_settings_db_models  # noqa: F401
from brandbite.domain.billing import db_models as billing_db_models  # noqa: F401
