"""Read-only query selectors."""

from approval_kernel.selectors.base import BaseSelector
from approval_kernel.selectors.subject_selector import SubjectSelector

__all__ = ["BaseSelector", "SubjectSelector"]
