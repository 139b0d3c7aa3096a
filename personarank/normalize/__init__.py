"""
Normalization subsystem.

* `title` – canonical lower-case job titles with acronyms expanded.
* `size` – employee-range strings mapped to size buckets.
* `company` – canonical company keys used to group rows.
* `schema` – dataclasses shared by ranking and optimization.
"""

from .company import canonical_key  # noqa: F401
from .size import SIZE_BUCKETS, normalize_size_bucket  # noqa: F401
from .title import normalize_title  # noqa: F401
