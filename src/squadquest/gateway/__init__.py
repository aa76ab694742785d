"""SquadQuest Gateway -- HTTP 接入层"""
