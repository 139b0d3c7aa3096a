"""
PersonaRank: persona-based lead ranking with a self-optimizing prompt.

The package ranks the contacts ("leads") of a company against a buyer
persona using an LLM judge and improves its own ranking instructions
with an evaluate/critique/rewrite loop.  The subpackages map onto the
stages of the pipeline:

1. **normalize** – Canonicalize free-text titles, employee ranges and
   company identities into the typed records in ``normalize.schema``.
2. **rank** – Run the deterministic prefilter gate, render the ranking
   prompt with short candidate IDs, call the LLM with cross-model
   fallback, repair its JSON output, map the results back onto real
   leads and assign final ranks per company.
3. **optimize** – Score predictions against a labeled evaluation set
   (precision/recall/F1 and NDCG@3), ask the LLM for a natural-language
   critique of the errors and apply targeted edits to the prompt.
4. **jobs** – Task entry points that wrap ranking and optimization with
   job/run bookkeeping in the record store (``store``).
5. **cli** – Command line entry point wiring the above together.
"""

__version__ = "0.3.0"
