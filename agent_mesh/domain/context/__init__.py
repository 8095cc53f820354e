# Context engineering for the mesh

# +-------------------------+
# |      Hybrid Store       |   (Persistent, searchable, shared by satellites)
# |-------------------------|
# | Documents + chunks      |
# | Vector index            |
# | Keyword index           |
# | Agent memories          |
# | Context slices          |
# +-------------------------+

# +-------------------------+
# |     Runtime Memory      |   (Live conversation, token-budgeted)
# |-------------------------|
# | Conversation turns      |
# | Running token total     |
# +-------------------------+

#    \    /
#     \  /   eviction: oldest turns -> summary -> ContextSlice
#      \/
# +------------------------------+
# |           Context            |   (Assembled per generator call)
# |------------------------------|
# | Recent slice summaries       |
# | Live turns in order          |
# | Retrieved documents          |
# +------------------------------+
#         |
#         v
#   [Text generator / satellite]
