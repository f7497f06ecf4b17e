"""
Priority scoring: converts the latest growth prediction per bin into an
estimated current fill, days-to-threshold, and a sortable priority list.

Modules
-------
scorer : FillBaseline / ForecastStatus / RiskLevel enums, PriorityScore
         dataclass, score_bin() + classify_risk() — pure functions, no DB.
ranker : BinPriority / PrioritySummary dataclasses, build_priority_list(),
         load_priority_list(), filter/sort/summarize helpers.
"""
