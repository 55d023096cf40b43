"""
Lifecycle event names fired by the unit of work.
"""

PRE_PERSIST = "pre_persist"
POST_PERSIST = "post_persist"
PRE_UPDATE = "pre_update"
POST_UPDATE = "post_update"
PRE_REMOVE = "pre_remove"
POST_REMOVE = "post_remove"
PRE_MOVE = "pre_move"
POST_MOVE = "post_move"
POST_LOAD = "post_load"

PRE_FLUSH = "pre_flush"
ON_FLUSH = "on_flush"
POST_FLUSH = "post_flush"
END_FLUSH = "end_flush"
ON_CLEAR = "on_clear"

POST_LOAD_TRANSLATION = "post_load_translation"
PRE_CREATE_TRANSLATION = "pre_create_translation"
PRE_UPDATE_TRANSLATION = "pre_update_translation"
PRE_REMOVE_TRANSLATION = "pre_remove_translation"
POST_REMOVE_TRANSLATION = "post_remove_translation"

DOCUMENT_EVENTS = frozenset(
    {
        PRE_PERSIST,
        POST_PERSIST,
        PRE_UPDATE,
        POST_UPDATE,
        PRE_REMOVE,
        POST_REMOVE,
        PRE_MOVE,
        POST_MOVE,
        POST_LOAD,
        POST_LOAD_TRANSLATION,
        PRE_CREATE_TRANSLATION,
        PRE_UPDATE_TRANSLATION,
        PRE_REMOVE_TRANSLATION,
        POST_REMOVE_TRANSLATION,
    }
)

MANAGER_EVENTS = frozenset({PRE_FLUSH, ON_FLUSH, POST_FLUSH, END_FLUSH, ON_CLEAR})

ALL_EVENTS = DOCUMENT_EVENTS | MANAGER_EVENTS
