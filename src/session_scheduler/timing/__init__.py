"""Session timing: clock sources, session model, scheduler state machine."""
