"""
Approval Kernel

A sequential multi-level approval workflow engine with:
- Supervisor-walk and table-lookup approver chain resolution
- A single active approval step per chain
- Email-gated decisions with short-circuit rejection
- Optimistic single-writer persistence per subject
- Best-effort, idempotent approver notification
"""

__version__ = "0.1.0"
