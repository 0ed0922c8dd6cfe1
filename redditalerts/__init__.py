"""redditalerts – deduplicated, ordered streaming of new subreddit posts.

Polls a subreddit's ``/new`` listing (which only ever exposes the latest
N submissions), diffs each batch against a bounded in-memory history
and forwards every genuinely new submission, oldest first, to a sink.

Run standalone via ``python -m redditalerts.run`` or drive
``SubmissionStreamer`` directly.
"""
