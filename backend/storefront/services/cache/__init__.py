"""Order listing cache."""
