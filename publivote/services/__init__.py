# Services package.
#
#   publication_service  lifecycle of a publication: list, detail,
#                        create with tags, cascading delete
#   vote_service         one-vote-per-user toggle ledger
#   tag_service          tag catalogue and the publication <-> tag link
#   image_service        ordered publication images backed by the object store
#   user_service         user listing, detail views and profile edits
#   lookup_service       read-only cities / publication types
#
# The lifecycle, vote and image services are classes built once at
# startup with their collaborators (session factory, object store, cache)
# and own their transaction boundary.  The remaining modules expose
# plain async functions that take an AsyncSession first and run inside
# the caller's transaction (``get_db`` for routers).
