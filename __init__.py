"""
Submission Validator

Validates filled-in spreadsheet and CSV submissions against template rules
and reports a pass/fail result for every checked cell plus a summary.

Key modules:
- main.py: FastAPI application with API endpoints
- validation_orchestrator.py: Runs rules across every sheet of a submission
- sheet_ingestor.py: Chunked sheet streaming and table detection
- rule_engine.py: Field resolution and rule evaluation
- condition_expression.py: Parser and evaluator for custom rule conditions
- rules_parser.py: Rules text file format
- cell_address.py: Cell address algebra
- utils/result.py: Result pattern used by the HTTP layer
"""
