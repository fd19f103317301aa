"""coursetrack - enrollment and progress tracking service."""
