# Namespace for ingestion pipeline steps
from .load_dataset import LoadDataset  # noqa: F401
from .validate_posts import ValidatePosts  # noqa: F401
from .persist_posts import PersistPosts  # noqa: F401
