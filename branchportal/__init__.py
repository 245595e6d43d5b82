"""Weekly compliance reporting portal for branch offices."""
