"""Campus online voting API: ballot submission, eligibility ledger and tallies."""

__version__ = "2.0.0"
