"""SquadQuest Core -- 任务生命周期、奖励结算与归档"""
