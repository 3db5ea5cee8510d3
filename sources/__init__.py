# Importing the source modules registers them
from . import json_dataset  # noqa: F401
