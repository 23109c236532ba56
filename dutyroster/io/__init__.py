"""I/O utilities for CSV import/export."""

from .export_csv import (
    export_assignments_csv,
    export_equity_csv,
    export_gap_report_csv,
    export_workers_csv,
)
from .import_csv import (
    import_assignment_types_csv,
    import_leave_csv,
    import_rules_csv,
    import_workers_csv,
)

__all__ = [
    "import_workers_csv",
    "import_assignment_types_csv",
    "import_rules_csv",
    "import_leave_csv",
    "export_assignments_csv",
    "export_equity_csv",
    "export_gap_report_csv",
    "export_workers_csv",
]
