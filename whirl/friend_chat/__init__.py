"""Friend chat module.

Provides:
    - FriendChatStore: Paginated friend history, live delivery, optimistic sends.
    - ScrollAnchor: Keeps the viewport anchored when older history is prepended.
"""
