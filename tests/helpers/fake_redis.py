class FakePipeline:
    def __init__(self, owner):
        self.owner = owner
        self.cmds = []

    def execute_command(self, *args):
        self.cmds.append(tuple(args))

    async def execute(self):
        self.owner.executed.append(list(self.cmds))
        self.cmds.clear()


class FakeRedis:
    """Records pipelined commands; answers execute_command from `replies`."""
    def __init__(self, replies=None):
        self.pipes = []
        self.executed = []
        self.commands = []
        self.replies = dict(replies or {})

    def pipeline(self):
        p = FakePipeline(self)
        self.pipes.append(p)
        return p

    async def execute_command(self, *args):
        self.commands.append(tuple(args))
        reply = self.replies.get(args[0])
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def aclose(self):
        pass
