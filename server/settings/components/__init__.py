"""Shared helpers for settings components."""

from pathlib import Path

from decouple import AutoConfig

# Build paths inside the project like this: BASE_DIR / 'some'
BASE_DIR = Path(__file__).parent.parent.parent.parent

# Values are looked up in the environment first, then in config/.env
config = AutoConfig(search_path=BASE_DIR.joinpath('config'))
