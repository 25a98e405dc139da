from django.dispatch import Signal

# Sent after every successful mutation of a sheet.
# kwargs: instance (name), message, snapshot
sheet_changed = Signal()
