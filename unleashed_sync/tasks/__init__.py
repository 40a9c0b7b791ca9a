from unleashed_sync.tasks.sync import process_mutation_message, run_sync

__all__ = ["process_mutation_message", "run_sync"]
