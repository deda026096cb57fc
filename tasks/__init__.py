"""tasks/ -- In-process background work that runs after the response is sent."""
