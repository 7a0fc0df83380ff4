"""Random chat module.

Provides:
    - RandomMatchCoordinator: Queue / pair / leave / friend-request protocol.
    - ChatEvent, RandomState, FriendRequestState: Transcript and state types.
"""
