"""mailbridge: multi-provider mailbox sync and dispatch pipeline."""
