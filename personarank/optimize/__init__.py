"""
Prompt optimization subsystem.

* `eval_set` – Loads the hand-ranked evaluation CSV.
* `metrics` – Precision/recall/F1, NDCG@3 and the composite score.
* `gradient` – LLM critique of the current prompt's errors.
* `editor` – LLM rewrite of the prompt guided by the critique.
* `loop` – Iterates evaluate/critique/edit and promotes the best version.
"""

from .eval_set import EvalLead, EvalSet, load_eval_set, parse_eval_set  # noqa: F401
from .loop import OptimizationResult, PromptOptimizer, PromptVersion  # noqa: F401
from .metrics import Metrics, Prediction, compute_metrics  # noqa: F401
