"""Settings entry point.

Settings are split into components and merged with ``django-split-settings``.
Every tunable value is read from the environment (or ``config/.env``)
through ``python-decouple``.
"""

from split_settings.tools import include

include(
    'components/common.py',
    'components/logging.py',
    'components/filemanager.py',
)
