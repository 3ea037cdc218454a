"""Pure scheduling core: recurrence expansion, conflict detection, calendar projection."""
