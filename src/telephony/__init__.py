"""Client side of the Asterisk control protocols.

``ami_client.ManagerClient`` speaks the Manager Interface (AMI) over TCP;
``agi.AgiChannel`` and ``agi_commands.AgiSession`` drive a call through the
Gateway Interface (AGI), either on stdio or behind ``fastagi.FastAgiServer``.
"""
