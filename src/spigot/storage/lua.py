"""Redis Lua scripts for atomic rate-limit bookkeeping.

Each script runs as a single Redis command, so a concurrent admission from
another coroutine or process can never observe the window between the cap
check and the reservation.

Grant members are encoded as ``<request_ref>:<amount_units>`` and scored by
their reservation time.
"""

# KEYS: grants zset, record hash, dispatch hash, open-dispatch zset
# ARGV: now, window_seconds, cap_units, amount_units, request_ref, identity,
#       destination, amount, channel, created_at
RESERVE_SCRIPT = """
    local grants_key = KEYS[1]
    local record_key = KEYS[2]
    local dispatch_key = KEYS[3]
    local open_key = KEYS[4]
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local cap = tonumber(ARGV[3])
    local amount = tonumber(ARGV[4])

    -- Drop grants that left the window
    redis.call('ZREMRANGEBYSCORE', grants_key, '-inf', '(' .. (now - window))

    local entries = redis.call('ZRANGE', grants_key, 0, -1, 'WITHSCORES')
    local used = 0
    for i = 1, #entries, 2 do
        used = used + tonumber(string.match(entries[i], ':(%d+)$'))
    end

    if used + amount > cap then
        local freed = 0
        local next_time = now + window
        for i = 1, #entries, 2 do
            freed = freed + tonumber(string.match(entries[i], ':(%d+)$'))
            if used - freed + amount <= cap then
                next_time = tonumber(entries[i + 1]) + window
                break
            end
        end
        return {0, tostring(used), tostring(next_time)}
    end

    redis.call('ZADD', grants_key, now, ARGV[5] .. ':' .. ARGV[4])
    local oldest = redis.call('ZRANGE', grants_key, 0, 0, 'WITHSCORES')
    redis.call('HSET', record_key,
        'identity', ARGV[6],
        'window_start', oldest[2],
        'amount_in_window', tostring(used + amount))

    redis.call('HSET', dispatch_key,
        'request_ref', ARGV[5],
        'identity', ARGV[6],
        'destination', ARGV[7],
        'amount', ARGV[8],
        'channel', ARGV[9],
        'state', 'queued',
        'created_at', ARGV[10])
    redis.call('ZADD', open_key, ARGV[10], ARGV[5])

    return {1, tostring(used + amount), ARGV[1]}
"""

# KEYS: grants zset, record hash
# ARGV: member, now, window_seconds
ROLLBACK_SCRIPT = """
    local grants_key = KEYS[1]
    local record_key = KEYS[2]
    local now = tonumber(ARGV[2])
    local window = tonumber(ARGV[3])

    redis.call('ZREM', grants_key, ARGV[1])
    redis.call('ZREMRANGEBYSCORE', grants_key, '-inf', '(' .. (now - window))

    local entries = redis.call('ZRANGE', grants_key, 0, -1, 'WITHSCORES')
    local used = 0
    for i = 1, #entries, 2 do
        used = used + tonumber(string.match(entries[i], ':(%d+)$'))
    end

    if redis.call('EXISTS', record_key) == 1 then
        redis.call('HSET', record_key, 'amount_in_window', tostring(used))
        if #entries > 0 then
            redis.call('HSET', record_key, 'window_start', entries[2])
        else
            redis.call('HDEL', record_key, 'window_start')
        end
    end
    return used
"""
