# Context lines around each hunk in the diffs shown for confirmation.
DEFAULT_DIFF_CONTEXT_LINES = 3
