"""Node-side helpers: volume statistics, mount handling and filesystem resize."""